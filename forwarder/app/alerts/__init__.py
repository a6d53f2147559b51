"""
alerts — Grafana-to-messenger alert relay.

Sub-modules:
    messengers/ — Messaging network backends (simulation, Threema Gateway)
    models      — Alert value, recipients, worker state
    channel     — In-process delivery queue
    composer    — Webhook → message text
    ingress     — Parse, fetch image, compose, enqueue
    worker      — Background connect-batch-drain delivery loop
"""
