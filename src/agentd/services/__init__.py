"""Runtime services: session store, approval gate, registry, dispatcher, runtime, channel hub."""
