from importlib import import_module

modules = [
    'auth',
    'users',
    'children',
    'guardians',
    'classrooms',
    'custody',
    'authorizations',
    'notifications',
    'audit',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
