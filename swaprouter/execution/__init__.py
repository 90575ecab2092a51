"""Swap quoting and execution"""
