"""File-queue coordinator that fans candidate points out to code generators.

The tuning server drops ``candidate.<step>`` envelopes into the inbox and
expects ``code_complete.<step>`` envelopes back.  Each point is handed to one
slot of a fixed worker registry; a slot runs one external generation command
at a time, locally or through ssh.  The loop is single threaded and the only
parallelism is the child processes themselves, so the registry needs no
locking.
"""
