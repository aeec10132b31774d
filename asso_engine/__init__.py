# SPDX-License-Identifier: Apache-2.0

"""
Association governance and financial workflow engine.

Dues status, expense and loan approvals, and loan repayment tracking for
diaspora community associations.
"""

__version__ = "1.0.0"
