"""Kernel counter and connection-tracking collectors"""
