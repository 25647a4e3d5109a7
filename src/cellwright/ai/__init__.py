"""Agent orchestration core: providers, retries, tools and the step loop."""
