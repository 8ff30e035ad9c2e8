"""Lead status synchronization between Pipedrive and Instantly."""
