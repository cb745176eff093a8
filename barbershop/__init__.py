"""Barbershop scheduling and integrations backend"""
