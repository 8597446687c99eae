"""Prometheus exposition server"""
