"""Credentials domain - Calendly OAuth tokens and provider identity per user"""
