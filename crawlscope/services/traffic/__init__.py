"""Traffic signals and the rule waterfall that classifies each request."""
