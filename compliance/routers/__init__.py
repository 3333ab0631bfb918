from compliance.routers import forms, items, notifications, submissions

__all__ = [
    'forms',
    'items',
    'notifications',
    'submissions',
]
