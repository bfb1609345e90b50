"""
Cloak: Confidential eligibility matching.

Users register encrypted attributes (country, city, salary, birth year).
Creators publish plaintext criteria. Applicants receive an encrypted
verdict that only they can decrypt.

The ledger NEVER sees a plaintext attribute or a plaintext verdict.
The criteria author NEVER learns whether an applicant matched.
"""

__version__ = "0.1.0"
