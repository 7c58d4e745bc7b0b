from mpm2d.simulators.mls_mpm import MLS_MPM

__all__ = ['MLS_MPM']
