"""Companion reply generation"""
