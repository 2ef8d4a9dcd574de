"""Share AMIs (and optionally their snapshots) from a source AWS account with a set of
target accounts.

The work is split in two phases.  First a plan is computed by scanning the source
account and selecting, for each target account, the images it should receive.  The plan
is always written to disk.  Second, and only when explicitly requested, the plan is
executed: images are shared, tagged and their tags copied to the target accounts.
"""

__version__ = "0.1.0"
