"""Course assistant: query analysis, retrieval, prompting and streamed answers."""
