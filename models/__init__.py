"""
Models Package

Pydantic DTOs for the local cart, catalog cache, coupon and order data.
Money is always held in minor currency units.
"""
