# -*- coding: utf-8 -*-

"""Administer Palworld dedicated servers over RCON."""

__version__ = "0.1.0"
