"""Command-line interface (entry point: fund-control)"""
