"""Background monitors"""
