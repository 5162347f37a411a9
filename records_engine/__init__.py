"""Record aggregation and merge engine for fighter and club statistics."""
