"""Terminal status view of the published snapshot"""
