"""Metrics collection, alerting and trading aggregates"""
