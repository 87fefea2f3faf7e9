"""Click plumbing shared by the netrepro command: base class and context."""
