"""Appointments domain - Reconciled appointment records and change distribution"""
