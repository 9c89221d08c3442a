"""Unique CRM backend tests"""
