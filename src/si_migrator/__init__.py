"""Service Instance Migrator

Moves service instances, together with their bindings and keys, from one
Cloud Foundry foundation to another.
"""

__version__ = '0.1.0'
