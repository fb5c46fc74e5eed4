"""serverswitch: Slack buttons for turning EC2 servers on and off."""
