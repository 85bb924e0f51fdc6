"""Bookworm storefront: catalog, cart and checkout over shared stock.

The pieces fit together like this:
- stock_store / sql_store: counters and holds, one atomic statement per change
- inventory: the reservation service, the only writer of those counters
- sweeper: expires abandoned holds in the background
- cart / checkout: holder-scoped collaborators that reserve, release and confirm
- router: the HTTP surface under /api/storefront
"""
