"""
Telco Churn Warehouse
"""
