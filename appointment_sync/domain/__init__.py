"""Domain packages: credentials, appointments, calendly"""
