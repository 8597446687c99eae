"""Snapshot publication and Prometheus text exposition"""
