import asyncio
import logging

from statesync import ManualScheduler, SyncProvider, SyncReceiver, codec

logging.basicConfig(level=logging.INFO)

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Registering a synchronized value on the producer")
print("-" * 100)
print()

# The manual scheduler flushes only when we ask it to, which keeps this script synchronous.
scheduler = ManualScheduler()
provider = SyncProvider(scheduler=scheduler)

todos = provider.register("todos")
board = todos.sync("board", {"columns": ["backlog"], "cards": {}, "labels": set()})

print(f"Producer value: {board.raw}")

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Bootstrapping a consumer from a snapshot")
print("-" * 100)
print()

# Anything that can deliver a snapshot document works here; the provider itself is the simplest.
receiver = SyncReceiver(provider.get_state_snapshot)


async def bootstrap():
    namespace = await receiver.register("todos")
    return await namespace.sync("board")


mirror = asyncio.run(bootstrap())
print(f"Mirror value: {mirror.value}")


def log_update(new_value, old_value, patches):
    print(f"Mirror updated by {len(patches)} patches: {new_value}")


mirror.on_update(log_update)

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Mutating through the handle")
print("-" * 100)
print()

# Batches travel as JSON text; a real transport would carry it over a socket.
wire = []
provider.bus.on("update", lambda namespace, patches: wire.append(codec.encode_batch(namespace, patches)))

state = board.handle()
state["columns"].append("doing")
state["columns"].append("done")
state["cards"]["c1"] = {"title": "Write docs", "column": "backlog"}
state["labels"].add("docs")

# Nothing is published until the scheduling cycle ends.
print(f"Batches on the wire before flush: {len(wire)}")
scheduler.run_pending()
print(f"Batches on the wire after flush: {len(wire)}")
print(f"Wire text: {wire[0]}")

for text in wire:
    namespace, patches = codec.decode_batch(text)
    receiver.apply_patches(namespace, patches)
wire.clear()

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Replacing the whole value")
print("-" * 100)
print()

stale = board.handle()
board.set(lambda current: {"columns": current["columns"][:1], "cards": {}, "labels": set()})

# The old handle was retired by set(); this write goes nowhere.
stale["cards"]["c2"] = {"title": "Never sent"}

scheduler.run_pending()
for text in wire:
    receiver.apply_patches(*codec.decode_batch(text))

print(f"Producer and mirror agree: {mirror.value == board.raw}")
