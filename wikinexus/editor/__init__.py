"""Headless block editor engine."""
