"""asgsync: keep NGINX Plus upstreams in sync with cloud scaling groups.

Periodically resolves the private IPs of AWS Auto Scaling groups or Azure
virtual machine scale sets and applies the minimal add/remove diff to the
matching upstream server lists through the NGINX Plus API.
"""

__version__ = "0.1.0"
