"""
ccbridge - Common Cartridge to Classroom course work conversion

This package reads IMS Common Cartridge course packages, converts their
manifest tree into normalized course work items and optionally creates the
supporting Drive folders, Docs and Forms those items reference.
"""

__version__ = "1.0.0"
__author__ = "Dale Chapman"
