"""Small helpers shared across domains"""
