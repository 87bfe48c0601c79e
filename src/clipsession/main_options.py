"""Click option helpers for clipsession."""
import click


class MutuallyExclusiveOption(click.Option):
    """Click option that may not be combined with the options it excludes.

    Used for the server address, where --socket and --host/--port select
    different transports.
    """

    def __init__(self, *args, **kwargs):
        """Initialize with the ``excludes`` list of conflicting option names."""
        self.excludes = kwargs.pop("excludes", [])
        super().__init__(*args, **kwargs)

    def handle_parse_result(self, ctx, opts, args):
        """Raise UsageError when a conflicting option was also given."""
        if self.name in opts:
            given = [name for name in self.excludes if name in opts]
            if given:
                others = ", ".join(f"--{name}" for name in given)
                raise click.UsageError(
                    f"Option --{self.name.replace('_', '-')} cannot be combined with {others}",
                    ctx=ctx,
                )
        return super().handle_parse_result(ctx, opts, args)
