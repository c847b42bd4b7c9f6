"""Infrastructure layer: ticket archive and event bus"""
