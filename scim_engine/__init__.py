"""scim-engine: SCIM 2.0 resource query and mutation engine (RFC 7643/7644).

Parses and evaluates filter expressions, applies PATCH operations, runs list
queries (filter, sort, paginate, project) and bulk requests against pluggable
storage adapters.  Usable behind a SCIM server or as a client of one.
"""

__version__ = "0.1.0"
