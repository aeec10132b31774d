# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the association governance engine.

This package contains pure business logic functions with no side effects.
Time, rosters and association settings are always passed in explicitly.
"""
