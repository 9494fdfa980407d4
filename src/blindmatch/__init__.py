"""
Blindmatch: encrypted profile matching for ad targeting.

The user's attribute profile is encrypted on-device under a Paillier key
pair. The matching service computes two metrics against cleartext
advertiser targets using only the public evaluation key:

1. Hamming Distance: how many attributes differ
2. Overlap Score: how many of the target's attributes the user has

The service NEVER sees the profile or the metric values.
Only the profile owner can decrypt the results.
"""

__version__ = "0.1.0"
