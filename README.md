# secmarket

An event-sourced domain model for a securities marketplace. It covers listing
securities, attaching documents, suspending and reinstating trading,
delisting, transferring ownership of shares, declaring dividends and
announcing stock splits.

Each change to a security is recorded as a domain event. A
`SecurityAggregate` holds the current state, and it is rebuilt by replaying
its events from an event store.

The package uses only the standard library.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `secmarket.events` holds the domain events: `SecurityListed`,
  `SecurityDocumentAdded`, `SecurityUpdated`, `SecuritySuspended`,
  `SecurityReinstated`, `SecurityDelisted`, `SecurityOwnershipChanged`,
  `SecurityDividendDeclared` and `SecuritySplitAnnounced`. It also holds
  `SecurityDocument` and `Metadata`.
  - Every event has `metadata()`, `to_dict()` and `to_json()`.
  - `event_from_json(event_type, data)` rebuilds an event from its JSON. It
    raises `ValueError` for an unknown type or for bad data.
- `secmarket.aggregate` holds `SecurityAggregate` and its business rules,
  together with `SecurityType`, `SecurityStatus`, `DividendInfo`, `SplitInfo`
  and `OwnershipRecord`.
  - A command that breaks a rule raises `SecurityError`.
  - Query methods: `shares_owned`, `ownership_percentage`, `all_owners`,
    `latest_dividend`, `latest_split`, `has_prospectus`, `is_active` and
    `is_tradable`.
- `secmarket.commands` holds the command objects:
  - `ListSecurityCommand`
  - `AddSecurityDocumentCommand`
  - `UpdateSecurityCommand`
  - `SuspendSecurityCommand`
  - `ReinstateSecurityCommand`
  - `DelistSecurityCommand`
  - `TransferOwnershipCommand`
  - `DeclareDividendCommand`
  - `AnnounceSplitCommand`

  Each command's `validate()` raises `ValidationError` at the first field it
  rejects. The `field` attribute of the error names that field. The module
  also provides the helpers `is_valid_security_type` and
  `is_valid_split_ratio`.
- `secmarket.repository` holds the following:
  - `EventStore`, a protocol, and `InMemoryEventStore`, which implements it.
  - `EventRecord` and `Snapshot`.
  - `record_from_domain`.
  - `EventSourcedSecurityRepository`. It finds securities by id, symbol,
    issuer, type, status or owner, and raises `NotFoundError` when a
    security does not exist. Its `save()` writes a snapshot once a security
    has reached version 10. `find_by_id` then starts from that snapshot.
- `secmarket.service` holds `SecurityService`. The service validates
  commands, applies them to aggregates, stores the resulting events and
  publishes them to an `EventBus`. Publishing failures are logged and do
  not undo the stored events.

## Example

`EventBus` is a protocol. Supply any object that has a `publish(event)`
method.

```python
from secmarket.commands import ListSecurityCommand, TransferOwnershipCommand
from secmarket.repository import InMemoryEventStore, EventSourcedSecurityRepository
from secmarket.service import SecurityService


class PrintingBus:
    def publish(self, event):
        print("published", event.event_type)


store = InMemoryEventStore()
repository = EventSourcedSecurityRepository(store)
service = SecurityService(repository, store, PrintingBus())

service.list_security(ListSecurityCommand(
    security_id="sec-1",
    issuer_id="issuer-1",
    security_type="stock",
    name="Example Corp",
    symbol="EXMP",
    total_shares=1000,
))

service.transfer_ownership(TransferOwnershipCommand(
    security_id="sec-1",
    from_owner="issuer-1",
    to_owner="investor-1",
    shares_count=250,
    trade_id="trade-1",
))

loaded = service.get_security("sec-1")
print(loaded.shares_owned("investor-1"))          # 250
print(loaded.ownership_percentage("investor-1"))  # 25.0
```

When a security is listed, the issuer owns every share. The following rules
apply:

- Transfers are refused while a security is suspended or delisted.
- Only the issuer can declare dividends or announce splits.
- Dividends and splits can only be declared for an active security.
- A symbol cannot be listed twice.

## What the package does not do

- **Storage:** the only event store is `InMemoryEventStore`, so events last
  only as long as the process. There is no database-backed store. You can
  write one yourself against the `EventStore` protocol.
- **Message bus:** none is provided. The `EventBus` protocol describes one.
- **Network access:** there is no HTTP API, background worker or command
  line tool. The package is a library that is used from Python code.
- **Market data:** `last_trade_price` and `market_cap` on a security are
  never set by any command. Because of that,
  `SecurityService.calculate_market_value` returns `0.0` unless you set
  these values yourself.