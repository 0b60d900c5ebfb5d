"""
SDN Redirect - traffic redirection control for inspection devices

Steers traffic between protected network elements and inspection
devices (firewalls, IDS, DPI appliances) attached to an SDN controller,
through pluggable controller backends.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

__version__ = "0.1.0"
__author__ = "DNS Science.io"
__copyright__ = "Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company"
