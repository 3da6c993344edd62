"""
Services module for business logic.

- data_layer: UnifiedDataLayer, engine-transparent CRUD
- orders/: order transaction engine and its stores
- sync/: local <-> remote synchronization and its scheduler
- purchasing: purchases and purchase orders
- ledger: customer ledger and branch finance
- events/: notification outbox
- connectivity: remote reachability monitor

Usage:
    from pos_api.services.orders import OrderService
    service = OrderService(local_store, remote_store, selector)
    order = service.create_order(branch_id, payload)
"""
