"""Built-in CLI commands for oauthspa.

* :mod:`~oauthspa.commands.session` -- ``login``, ``token``, ``refresh``,
  ``userinfo``, ``introspect``, ``status`` and ``logout``, registered
  directly on the root app.
* :mod:`~oauthspa.commands.profile` -- the ``profile`` sub-command group.
"""
