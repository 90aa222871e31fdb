"""Third-party API clients"""
