"""
voucher_purchases -- Wholesale voucher purchase orders.

Merchants build purchase orders of provider voucher options, the engine
reconciles prices and balance against the provider, issues one voucher
unit per ledger record with an idempotent external id, rolls up the
outcome, and attaches generated codes to storefront products.

Architecture:
    voucher_purchases/ is a top-level package built on voucher_kernel/
    (db, logging, exceptions, sequences) and voucher_config/.  Nothing in
    voucher_kernel/ imports from here.

Layout:
    domain/    Pure status rules, DTOs and pacing.  No I/O.
    models/    SQLAlchemy ORM for stores, catalog and the order ledger.
    clients/   Provider and storefront HTTP clients behind protocols.
    services/  Order editing, reconciliation, execution, attachment and
               orchestration.
"""
