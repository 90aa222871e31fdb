"""Appointment sync: Calendly bookings reconciled into a local appointments table"""
