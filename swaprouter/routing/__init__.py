"""Liquidity graph, constant-product pricing and route search"""
