"""
Utilities for describing where the provisioned services can be reached.
"""
import socket


def get_host_ip(probe_address: str = "10.255.255.255") -> str:
    """
    Finds the address of the interface holding the default route.
    Falls back to loopback on hosts without one.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            # Nothing is sent on a UDP connect; it only selects a route.
            s.connect((probe_address, 1))
            return s.getsockname()[0]
        except OSError:
            return "127.0.0.1"
