"""web/ -- Server-rendered login and logout pages."""
